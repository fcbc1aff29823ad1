# settlement/__init__.py
