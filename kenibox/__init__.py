"""KeniBox: a screenshare checker that looks for traces of Minecraft cheats on the local machine."""

__version__ = "1.0.0"
