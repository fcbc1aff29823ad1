# settlement/services/__init__.py
