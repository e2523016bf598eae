# ride_dispatch/shared/__init__.py
"""
Общие модели и события, используемые компонентами движка.
"""
