"""blockday core library: 72 blocks a day, timer and segment accounting.

Public API re-exports for convenient imports:
    from blockday import BlockdayController, BlockTimer, block_index_at, ...
"""

# Errors
from blockday.errors import BlockdayError, InvalidTransition, PersistenceError

# Block arithmetic
from blockday.clock import (
    BLOCKS_PER_DAY,
    BLOCK_SECONDS,
    Clock,
    SystemClock,
    block_index_at,
    boundary_for,
    block_end_at,
    display_number,
    day_ordered_indices,
    logical_today,
)

# Workspace & paths
from blockday.workspace import (
    workspace_root,
    get_user_timezone,
    today_str,
    now_local,
    settings_path,
    hooks_config_path,
    day_path,
)

# File I/O
from blockday.fileio import (
    read_text,
    read_json,
    read_yaml,
    write_json_atomic,
    write_yaml_atomic,
)

# Models
from blockday.models import (
    Block,
    BlockSegment,
    BlockStatus,
    Run,
    SegmentType,
)

# Segments & scale
from blockday.segments import (
    MIN_SEGMENT_SECONDS,
    SegmentLedger,
    normalize,
    total_seconds,
    work_seconds,
    break_seconds,
)
from blockday.scale import RunPlan, FillSlice, plan_run, fill_layout, previous_visual_proportion

# Persistence
from blockday.store import BlockStore, JsonBlockStore, MemoryBlockStore, fill_day

# Settings
from blockday.settings import Settings, load_settings, save_settings

# Timer & observers
from blockday.timer import (
    BlockTimer,
    Completion,
    EventKind,
    Outcome,
    TickResult,
    TimerEvent,
    TimerSession,
    TimerState,
    Trigger,
)
from blockday.autocontinue import AutoContinueScheduler, Countdown, PendingAction
from blockday.checkin import CheckInGovernor, GracePeriod
from blockday.recovery import CrashRecoveryManager

# Days, stats, hooks
from blockday.days import DayBook, completion_status
from blockday.stats import (
    display_minutes,
    display_label,
    dominant_category,
    dominant_label,
    distinct_activity_count,
    day_totals,
)
from blockday.hooks import run_hooks, fire_hooks, load_hooks_config

# Controller
from blockday.controller import BlockdayController
