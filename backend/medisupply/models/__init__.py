from .auth import User, Role, UserRole, Permission, RolePermission, SessionToken, UserPermissionOverride
from .security import SecurityEvent
from .documents import AuditEvent, DocumentSequence
from .masters import Product, Warehouse, Principal
from .workflow import WorkflowStage, WorkflowTransition, StagePermission
from .purchasing import PurchaseOrder, PurchaseOrderLine, WorkflowHistoryEntry, InvoiceReceiving, InvoiceReceivingLine
from .quality import QualityControl, QCProduct, QCItem
from .warehouse import WarehouseApproval, WarehouseApprovalProduct
from .inventory import Inventory, StockMovement, StockReservation, UtilizationRecord

__all__ = [
    'User', 'Role', 'UserRole', 'Permission', 'RolePermission', 'SessionToken', 'UserPermissionOverride',
    'SecurityEvent',
    'AuditEvent', 'DocumentSequence',
    'Product', 'Warehouse', 'Principal',
    'WorkflowStage', 'WorkflowTransition', 'StagePermission',
    'PurchaseOrder', 'PurchaseOrderLine', 'WorkflowHistoryEntry', 'InvoiceReceiving', 'InvoiceReceivingLine',
    'QualityControl', 'QCProduct', 'QCItem',
    'WarehouseApproval', 'WarehouseApprovalProduct',
    'Inventory', 'StockMovement', 'StockReservation', 'UtilizationRecord',
]
