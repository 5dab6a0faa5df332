"""
Database Package
================

Exports key database components.
"""

from autoops.db.models import (
    Base,
    RunRecordModel,
    EvolutionReportModel,
    StrategySnapshotModel,
)
from autoops.db.connection import (
    init_db,
    get_session_maker,
    close_db,
    commit_session,
    write_lock,
)
