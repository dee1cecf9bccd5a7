from .crud_sync import (
    get_checkpoint,
    set_checkpoint,
    create_sync_record,
    get_sync_records,
)
