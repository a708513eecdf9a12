"""
Constants for the APNS transport, provider token signing and Bark payloads.
"""

# APNS Hosts
APNS_PRODUCTION_HOST = "api.push.apple.com"
APNS_SANDBOX_HOST = "api.sandbox.push.apple.com"

# APNS API path
APNS_DEVICE_PATH = "/3/device/{device_token}"

# JWT configuration
JWT_ALGORITHM = "ES256"
JWT_TOKEN_LIFETIME_SECONDS = 3600  # APNs rejects tokens older than 1 hour
TOKEN_STALE_AFTER_SECONDS = 2700  # Regenerate after 45 minutes

# Dispatch configuration
DEFAULT_CONCURRENCY = 100
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0

# Bark app defaults
BARK_TOPIC = "me.fin.bark"
BARK_CATEGORY = "myNotificationCategory"
BARK_DEFAULT_TITLE = "Notification"
BARK_DEFAULT_SOUND = "chime.caf"
BARK_ENCRYPTED_BODY_PLACEHOLDER = "NoContent"
BARK_INTERRUPTION_LEVELS = {
    "active": "active",
    "timesensitive": "timeSensitive",
    "passive": "passive",
}

# Payload encryption
AES_BLOCK_SIZE_BYTES = 16
AES_KEY_SIZES = {
    "aes128": 16,
    "aes192": 24,
    "aes256": 32,
}
CIPHER_MODES = {"cbc", "ecb"}
IV_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"

# APNS Error Codes (from reason field of the response body)
APNS_ERROR_CODES = {
    # Client errors
    "BadCollapseId": "The collapse identifier exceeds the maximum allowed size",
    "BadDeviceToken": "The specified device token is invalid",
    "BadExpirationDate": "The apns-expiration value is invalid",
    "BadMessageId": "The apns-id value is invalid",
    "BadPriority": "The apns-priority value is invalid",
    "BadTopic": "The apns-topic value is invalid",
    "DeviceTokenNotForTopic": "The device token doesn't match the specified topic",
    "DuplicateHeaders": "One or more headers are repeated",
    "IdleTimeout": "Idle timeout",
    "InvalidPushType": "The apns-push-type value is invalid",
    "MissingDeviceToken": "The device token is not specified in the request path",
    "MissingTopic": "The apns-topic header is missing from the request",
    "PayloadEmpty": "The message payload is empty",
    "PayloadTooLarge": "The message payload is too large",
    "TopicDisallowed": "Pushing to this topic is not allowed",

    # Token errors
    "BadCertificate": "The certificate is invalid",
    "BadCertificateEnvironment": "The client certificate is for the wrong environment",
    "ExpiredProviderToken": "The provider token is stale and a new token should be generated",
    "Forbidden": "The specified action is not allowed",
    "InvalidProviderToken": "The provider token is not valid or the token signature cannot be verified",
    "MissingProviderToken": "No provider certificate was used to connect to APNs",

    # Device token errors
    "Unregistered": "The device token is no longer active for the topic",

    # Server errors
    "TooManyProviderTokenUpdates": "The provider token has been updated too often",
    "TooManyRequests": "Too many requests were made consecutively to the same device token",
    "InternalServerError": "An internal server error occurred",
    "ServiceUnavailable": "The service is unavailable",
    "Shutdown": "The server is shutting down",
}

# Reasons that mean the provider token must be regenerated
APNS_PROVIDER_TOKEN_REASONS = {"ExpiredProviderToken", "InvalidProviderToken"}
APNS_INVALID_DEVICE_REASONS = {"BadDeviceToken", "Unregistered"}

# HTTP status code classification
APNS_TOKEN_INVALID_STATUS_CODES = {410}  # Unregistered
APNS_AUTH_ERROR_STATUS_CODES = {401, 403}
