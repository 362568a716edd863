"""Load every ORM module so string-based relationships resolve.

Imported by the API app, the job runner and Alembic, which may otherwise only
touch a subset of the models.
"""

from snapshare.domain.organizers import db_models as organizer_db_models  # noqa: F401
from snapshare.domain.events import db_models as event_db_models  # noqa: F401
from snapshare.domain.photos import db_models as photo_db_models  # noqa: F401
