API_GROUP = "kubeless.io"
API_VERSION = "v1beta1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

TRIGGER_KIND = "CronJobTrigger"
TRIGGER_PLURAL = "cronjobtriggers"
FUNCTION_PLURAL = "functions"

FINALIZER = f"{API_GROUP}/cronjobtrigger"

# Ownership marker stamped on every CronJob the operator creates
LABEL_CREATED_BY = "created-by"
CREATED_BY_VALUE = "kubeless"

CRONJOB_NAME_PREFIX = "trigger-"
CRONJOB_CONTAINER_NAME = "trigger"

SUCCESSFUL_JOBS_HISTORY_LIMIT = 3
FAILED_JOBS_HISTORY_LIMIT = 1
DEFAULT_TIMEOUT_SECONDS = 180
DEFAULT_FUNCTION_PORT = 8080

MAX_RETRIES = 11

# Settings ConfigMap keys
CONFIG_FUNCTIONS_NAMESPACE = "functions-namespace"
CONFIG_PROVISION_IMAGE = "provision-image"
CONFIG_PROVISION_IMAGE_SECRET = "provision-image-secret"
CONFIG_BUILDER_IMAGE_SECRET = "builder-image-secret"

# Environment variables
KUBELESS_NAMESPACE_ENV = "KUBELESS_NAMESPACE"
KUBELESS_CONFIG_ENV = "KUBELESS_CONFIG"
WORKERS_ENV = "CRONJOB_TRIGGER_WORKERS"
METRICS_PORT_ENV = "CRONJOB_TRIGGER_METRICS_PORT"

DEFAULT_KUBELESS_NAMESPACE = "kubeless"
DEFAULT_KUBELESS_CONFIG = "kubeless-config"
