"""SprintFlow - work-item completion and time-accounting engine"""

__version__ = "0.1.0"
