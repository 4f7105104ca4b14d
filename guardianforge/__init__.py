"""GuardianForge - autonomous wallet-threat monitoring agent."""

__version__ = "0.1.0"
