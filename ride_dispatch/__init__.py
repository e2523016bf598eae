# ride_dispatch/__init__.py
"""
Движок диспетчеризации поездок: подбор водителей, согласование цены
и жизненный цикл бронирования.
"""

from ride_dispatch.engine import DispatchEngine, RideDispatch, build_engine, create_engine_from_settings

__version__ = "0.4.0"

__all__ = ["DispatchEngine", "RideDispatch", "build_engine", "create_engine_from_settings"]
