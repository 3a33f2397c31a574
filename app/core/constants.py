"""
Application-wide constants
"""

SERVICE_NAME = "biometric-sync-service"

# Roles allowed to manage terminals, sync batches and enrollment sessions
DEVICE_MANAGER_ROLES = ("ADMIN", "HR")

# Prefix marking a device secret produced by encrypt_device_secret
DEVICE_SECRET_PREFIX = "enc:v1:"

# Source tag written on daily records created from terminal punches
BIOMETRIC_SOURCE = "BIOMETRIC"
