from __future__ import annotations

from app.models.service import Service, ServiceCategory, ServiceSubcategory  # noqa: F401
from app.models.media import ServiceMedia  # noqa: F401
