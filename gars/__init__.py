"""Agent runtime, plan files, subagent file protocol, session archive, browser helpers and a chat connector interface."""

__version__ = "0.0.3"