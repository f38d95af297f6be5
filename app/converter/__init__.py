"""
PDF Table Converter Backend Application.

A FastAPI service that turns tables in (possibly password-protected) PDF
documents into editable rows using AI (OpenAI), and exports them to Excel.
"""

__version__ = "1.0.0"
