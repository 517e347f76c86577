'''
    Incremental downloader of Slack workspace history.

    Entry point is `slack_dl.main`, the work itself is done by `slack_dl.saver.Saver`.
'''
