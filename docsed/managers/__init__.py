"""
Managers that execute parsed sed expressions against a Google Doc.
"""
