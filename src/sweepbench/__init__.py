"""Benchmark sweeps: patch one constant, run the build, record time and memory."""

__version__ = "0.1.0"
