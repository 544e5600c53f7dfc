"""Circulation desk - CLI helpers

- Output formatting for the command line (ui_helpers.py)
- Input validation for registration and cataloging (validators.py)
"""
