"""harproxy - supervise mitmdump and collect captured traffic as HAR."""

__version__ = "0.1.0"
