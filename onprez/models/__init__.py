from onprez.models.user import User
from onprez.models.business import Business, BusinessMember
from onprez.models.service import Service
from onprez.models.customer import Customer
from onprez.models.appointment import Appointment, AppointmentReminder
from onprez.models.account_lockout import AccountLockout
from onprez.models.auth_attempt import AuthAttempt
from onprez.models.security_log import SecurityLog
from onprez.models.opening_hours import BusinessHours, SpecialDate
