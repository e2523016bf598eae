# ride_dispatch/core/__init__.py
"""
Доменная логика: водители, заявки, подбор, согласование, бронирования, цены.
"""
