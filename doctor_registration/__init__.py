"""
Doctor registration workflow service.
"""
