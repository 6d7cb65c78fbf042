# clinicbook/routers/__init__.py
from . import health
from . import admin
from . import doctors
from . import availability
from . import appointments
from . import records

__all__ = ["health", "admin", "doctors", "availability", "appointments", "records"]
