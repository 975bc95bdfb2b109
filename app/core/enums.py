from enum import Enum


class UserRole(str, Enum):
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    ORG_WARD = "ORG_WARD"
    INDIVIDUAL = "INDIVIDUAL"


ADMIN_ROLES = (UserRole.PLATFORM_ADMIN.value, UserRole.ORG_ADMIN.value)


class OrganizationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class TokenStatus(str, Enum):
    ACTIVE = "ACTIVE"
    USED = "USED"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"


class EnrollmentStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"
    TRANSFERRED = "TRANSFERRED"
    WITHDRAWN = "WITHDRAWN"


class GuardianRelation(str, Enum):
    PARENT = "Parent"
    MOTHER = "Mother"
    FATHER = "Father"
    GUARDIAN = "Guardian"
    AUNT = "Aunt"
    UNCLE = "Uncle"
    GRANDPARENT = "Grandparent"
    SIBLING = "Sibling"
    OTHER = "Other"


class Gender(str, Enum):
    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class EducationLevel(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    TERTIARY = "TERTIARY"
    VOCATIONAL = "VOCATIONAL"
    OTHER = "OTHER"
