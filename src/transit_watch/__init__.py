"""Transit Watch: Discord sign-in and sessions for the station report map."""

__version__ = "0.1.0"
