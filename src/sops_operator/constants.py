"""Constants for the SOPS Operator."""

# API Group
API_GROUP = "addons.projectcapsule.dev"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_SOPS_PROVIDER = "SopsProvider"
KIND_SOPS_SECRET = "SopsSecret"
KIND_GLOBAL_SOPS_SECRET = "GlobalSopsSecret"

# Resource Plurals
PLURAL_SOPS_PROVIDER = "sopsproviders"
PLURAL_SOPS_SECRET = "sopssecrets"
PLURAL_GLOBAL_SOPS_SECRET = "globalsopssecrets"

# Labels
LABEL_KEY_SECRET = f"{API_GROUP}/sops-secret"
LABEL_KEY_SECRET_VALUE = "true"

# Field Manager
FIELD_MANAGER = "sops-operator"

# Condition Types
COND_READY = "Ready"
COND_NOT_READY = "NotReady"

# Condition Reasons
REASON_SUCCEEDED = "Loaded"
REASON_FAILED = "Failed"
REASON_NOT_SOPS_ENCRYPTED = "NotSopsEncrypted"
REASON_DECRYPTION_FAILED = "DecryptionFailure"
REASON_REPLICATION_FAILED = "ReplicationFailure"
REASON_OWNERSHIP_CONFLICT = "OwnershipConflict"
REASON_KEY_LOAD_FAILED = "KeyLoadFailure"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_SECRET_REPLICATED = "SecretReplicated"
EVENT_REASON_SECRET_REMOVED = "SecretRemoved"
EVENT_REASON_DECRYPTION_FAILED = "DecryptionFailed"
EVENT_REASON_OWNERSHIP_CONFLICT = "OwnershipConflict"
EVENT_REASON_NO_PROVIDER = "NoDecryptionProvider"

# Key secret entries
DECRYPTION_PGP_EXT = ".asc"
DECRYPTION_AGE_EXT = ".agekey"
DECRYPTION_VAULT_TOKEN_FILE = "sops.vault-token"
DECRYPTION_AWS_KMS_FILE = "sops.aws-kms"
DECRYPTION_AZURE_AUTH_FILE = "sops.azure-kv"
DECRYPTION_GCP_CREDS_FILE = "sops.gcp-kms"

# Max size in bytes of a single document handed to sops
MAX_ENCRYPTED_DOCUMENT_SIZE = 5 << 20
