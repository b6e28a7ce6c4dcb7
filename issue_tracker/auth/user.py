import enum


class Role(str, enum.Enum):
    SALES_MANAGER = "sales_manager"
    PRODUCT_SUPPORT = "product_support"
    TECH_SUPPORT_TEAM = "tech_support_team"

ROLE_LABELS = {
    Role.SALES_MANAGER: "Sales Manager",
    Role.PRODUCT_SUPPORT: "Product Support",
    Role.TECH_SUPPORT_TEAM: "Tech Support Team",
}


class User:
    """Signed-in principal. There are no user accounts, only a role per session."""

    __slots__ = ("role",)

    def __init__(self, role: Role):
        self.role = role

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role.value)

    def __repr__(self) -> str:
        return f"User(role={self.role.value!r})"
