import enum


class OrderStatus(str, enum.Enum):
    pending = "Pending"
    processing = "Processing"
    completed = "Completed"
    cancelled = "Cancelled"
    declined = "Declined"
    delivered = "Delivered"


class PaymentMethod(str, enum.Enum):
    cash = "Cash"
    gcash = "GCash"


class OrderChannel(str, enum.Enum):
    online = "Online"
    in_store = "In-Store"


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    # store "In-Store", not "in_store"
    return [member.value for member in enum_cls]
