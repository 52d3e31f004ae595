"""
CLI package initialization.
Contains the voip-utility command line entry point.
"""
