"""Drive a LEGO EV3 robot from voice-assistant commands queued on Amazon SQS."""

__version__ = "0.1.0"
