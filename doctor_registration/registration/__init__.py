"""
Doctor registration module.

This module provides the multi-step doctor registration workflow including:
- Step navigation and progress tracking
- Declarative step validation
- Debounced email/phone availability checks
- Medical license verification with name matching
- Draft autosave and resume
- Final submission to the registration backend
"""
