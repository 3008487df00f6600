from .db import (
    Base,
    ReminderStore,
    StaleReminderError,
    StalledEntry,
    create_all,
    dispose_engine,
    get_engine,
    make_engine,
)  # noqa: F401
