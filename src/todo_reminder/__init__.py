"""待办提醒生命周期引擎"""

__version__ = "1.0.0"
