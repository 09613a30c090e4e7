from .booking import OccupancySlotInfo, build_time_slot_grid, check_availability, find_conflicts, has_time_overlap
from .bulk_import import BulkImportReconciler, ImportReport
from .directory import ReferenceDirectory, ResolutionContext
from .errors import (
	DuplicateDocumentError,
	ImportAbortedError,
	PartialBookingError,
	RecurrenceRangeError,
	ReservationNotFoundError,
	SchedulingError,
	SlotConflictError,
	StorageError,
	ValidationError,
)
from .lifecycle import BookingRequest, BookingResult, ReservationLifecycle
from .models import Active, Box, Cancelled, Center, Doctor, Reservation
from .recurrence import Recurrence, expand_recurrence
from .yaml_store import YamlDocumentStore, where

__all__ = [
	"OccupancySlotInfo",
	"build_time_slot_grid",
	"check_availability",
	"find_conflicts",
	"has_time_overlap",
	"BulkImportReconciler",
	"ImportReport",
	"ReferenceDirectory",
	"ResolutionContext",
	"DuplicateDocumentError",
	"ImportAbortedError",
	"PartialBookingError",
	"RecurrenceRangeError",
	"ReservationNotFoundError",
	"SchedulingError",
	"SlotConflictError",
	"StorageError",
	"ValidationError",
	"BookingRequest",
	"BookingResult",
	"ReservationLifecycle",
	"Active",
	"Box",
	"Cancelled",
	"Center",
	"Doctor",
	"Reservation",
	"Recurrence",
	"expand_recurrence",
	"YamlDocumentStore",
	"where",
]
