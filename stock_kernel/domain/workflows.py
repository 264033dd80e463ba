"""
Stock Kernel Workflows.

State machines for stock transactions, sales orders, deliveries and
transfers.  Services consult these tables for the legal source states of an
action and claim the transition with a conditional status update.
"""

from stock_kernel.domain.workflow import Guard, Transition, Workflow


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

STOCK_AVAILABLE = Guard(
    name="stock_available",
    description="Every line can be covered by available (unreserved) stock",
)

RESERVATION_HELD = Guard(
    name="reservation_held",
    description="The document holds a reservation for every line",
)


# -----------------------------------------------------------------------------
# Stock Transaction Workflow
# -----------------------------------------------------------------------------

STOCK_TRANSACTION_WORKFLOW = Workflow(
    name="stock_transaction",
    description="Import, export, transfer, disposal and stocktake documents",
    initial_state="pending",
    states=("pending", "approved", "cancelled"),
    transitions=(
        Transition("pending", "approved", action="approve", moves_stock=True),
        Transition("pending", "cancelled", action="cancel"),
    ),
    terminal_states=("approved", "cancelled"),
)


# -----------------------------------------------------------------------------
# Sales Order Workflow
# -----------------------------------------------------------------------------

# Pickup orders skip the machine and are created directly in "completed".
SALES_ORDER_WORKFLOW = Workflow(
    name="sales_order",
    description="Sales order fulfillment",
    initial_state="pending",
    states=("pending", "preparing", "delivering", "completed", "cancelled"),
    transitions=(
        Transition("pending", "preparing", action="approve"),
        Transition(
            "preparing", "delivering", action="dispatch",
            guard=RESERVATION_HELD, moves_stock=True,
        ),
        Transition("delivering", "completed", action="complete"),
        Transition("pending", "cancelled", action="cancel", moves_stock=True),
        Transition("preparing", "cancelled", action="cancel", moves_stock=True),
    ),
    terminal_states=("completed", "cancelled"),
)


# -----------------------------------------------------------------------------
# Delivery Workflow
# -----------------------------------------------------------------------------

DELIVERY_WORKFLOW = Workflow(
    name="delivery",
    description="Shipment of a delivery-type sales order",
    initial_state="pending",
    states=("pending", "in_transit", "delivered", "failed"),
    transitions=(
        Transition("pending", "in_transit", action="ship"),
        Transition("in_transit", "delivered", action="deliver"),
        Transition("pending", "failed", action="fail"),
        Transition("in_transit", "failed", action="fail"),
    ),
    terminal_states=("delivered", "failed"),
)


# -----------------------------------------------------------------------------
# Stock Transfer Workflow
# -----------------------------------------------------------------------------

STOCK_TRANSFER_WORKFLOW = Workflow(
    name="stock_transfer",
    description="Warehouse-to-warehouse transfer",
    initial_state="pending",
    states=("pending", "in_transit", "completed", "cancelled"),
    transitions=(
        Transition(
            "pending", "in_transit", action="approve",
            guard=STOCK_AVAILABLE, moves_stock=True,
        ),
        Transition(
            "in_transit", "completed", action="complete",
            guard=RESERVATION_HELD, moves_stock=True,
        ),
        Transition("pending", "cancelled", action="cancel"),
        Transition("in_transit", "cancelled", action="cancel", moves_stock=True),
    ),
    terminal_states=("completed", "cancelled"),
)