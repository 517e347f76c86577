'''
    Contains helpers for validating JSON schemas of
    the configuration and of the archive's own bookkeeping files
'''

from .common import *

import json
from jsonschema.validators import Draft7Validator
from jsonschema.exceptions import ValidationError

@dataclass
class BadObject:
    received: Type

    def __str__(self) -> str:
        return f"not of object JSON type (real python type {self.received})"

@dataclass
class UnsupportedVersion:
    required: str
    found: str

    def __str__(self) -> str:
        return f"expected version {self.required}, found {self.found}"

@dataclass
class InvalidVersion:
    found: Any

    def __str__(self) -> str:
        return f"unrecognized version {self.found} is not in expected format (a string matching /\\d+(\\.\\d+){{0,2}}/ regex)"

@dataclass
class UnknownOption:
    message: str
    path: Iterable[str]

    def __str__(self) -> str:
        return f'unknown option at #/{"/".join(elem for elem in self.path)}: {self.message}'

class MissingVersion:
    def __str__(self) -> str:
        return "missing versioning information, it may not be loadable and some data may be lost"

ValidationErrors = Union[
    BadObject,
    Iterable[ValidationError],
]

ValidationWarnings = Union[
    MissingVersion,
    UnsupportedVersion,
    InvalidVersion,
    UnknownOption,
]

def loadSchemaValidator(schemaName: str) -> Draft7Validator:
    '''Loads one of the schemas shipped next to this module.'''
    with open(sourceDirectory(__file__)/schemaName, encoding='utf8') as schemaFile:
        return Draft7Validator(json.load(schemaFile))

def formatValidationErrors(errors: Iterable[ValidationError]) -> str:
    errorMessage = 'List of errors follows:\n'
    for error in errors:
        errorMessage += f'  error: {error.message} at #/{"/".join(str(elem) for elem in error.absolute_path)}\n'
        errorMessage += f'    invalid part: {error.instance}\n'
    return errorMessage

def validate(jsonObject: Any, validator: Draft7Validator,
        # currently can only contain the delimiting major version
        acceptedVersion: Optional[str], # None means no versioning check
        onWarning: Callable[[ValidationWarnings], None],
        onError: Callable[[ValidationErrors], NoReturn]
    ) -> dict:
    '''
        Checks (potentially) versioned JSON object against the schema.

        Problems that still allow loading are reported through `onWarning`,
        `onError` is expected to raise.
    '''
    if not isinstance(jsonObject, dict):
        onError(BadObject(type(jsonObject)))
    if acceptedVersion is not None:
        if 'version' not in jsonObject:
            onWarning(MissingVersion())
        elif not isinstance(jsonObject['version'], str) or not re.match(r'^\d+(\.\d+(\.\d+)?.*)?', jsonObject['version']):
            onWarning(InvalidVersion(jsonObject['version']))
        else:
            version = jsonObject['version']
            # We do only very crude major version check for now
            if not re.match(fr'^{acceptedVersion}(\..*)?$', version):
                onWarning(UnsupportedVersion(required=acceptedVersion, found=version))

    validationErrors = []
    for error in validator.iter_errors(jsonObject):
        if (error.validator == 'additionalProperties'
            and error.schema.get('additionalPropertiesWarn', None) is not None):
            onWarning(UnknownOption(message=error.message, path=[str(elem) for elem in error.path]))
            continue
        validationErrors.append(error)
    if len(validationErrors) > 0:
        onError(validationErrors)
    return jsonObject

def validateDocument(jsonObject: Any, validator: Draft7Validator, acceptedVersion: Optional[str],
        documentName: str, error: Callable[[], Exception], warnMissingVersion: bool = True) -> dict:
    '''
        Validates the document and reports found problems to the log.
        Documents that can't be used raise exception created by `error`.
    '''
    def onWarning(w: ValidationWarnings):
        if isinstance(w, MissingVersion) and not warnMissingVersion:
            return
        if isinstance(w, UnsupportedVersion):
            logging.warning(
                f'{documentName} comes from different version {w.found}, current version is {w.required}. Some data may be lost.')
        else:
            logging.warning(f"{documentName} encountered warning '{w}', it may not be loaded correctly.")
    def onError(e: ValidationErrors) -> NoReturn:
        if isinstance(e, BadObject):
            logging.error(f"Failed to load {documentName.lower()}, loaded json object has unsupported type {e.received}.")
        else:
            logging.error(f"{documentName} didn't match expected schema. " + formatValidationErrors(e))
        raise error()
    return validate(jsonObject, validator, acceptedVersion=acceptedVersion, onWarning=onWarning, onError=onError)
