from tableside.models.restaurant import Restaurant
from tableside.models.staff_user import StaffUser
from tableside.models.restaurant_member import RestaurantMember
from tableside.models.role import Role, UserRole
from tableside.models.restaurant_table import RestaurantTable
from tableside.models.table_session import SessionParticipant, TableSession
from tableside.models.menu_category import MenuCategory
from tableside.models.menu_item import MenuItem, MenuItemVariant
from tableside.models.order import Order
from tableside.models.order_item import OrderItem
