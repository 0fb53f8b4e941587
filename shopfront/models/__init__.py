from shopfront.models.shop import Shop
from shopfront.models.user import User
from shopfront.models.shop_member import ShopMember
from shopfront.models.audit_log import AuditLog
