"""Constants used across the operator and the varnish-controller sidecar."""

# VarnishCluster custom resource
GROUP = "caching.varnish-operator.io"
VERSION = "v1alpha1"
KIND = "VarnishCluster"
PLURAL = "varnishclusters"

# Generated label keys. Together they form the stable selector of a component.
LABEL_VARNISH_OWNER = "varnish-owner"
LABEL_VARNISH_COMPONENT = "varnish-component"
LABEL_VARNISH_UID = "varnish-uid"

# Component roles
COMPONENT_SERVICE_ACCOUNT = "serviceaccount"
COMPONENT_ROLE = "role"
COMPONENT_ROLE_BINDING = "rolebinding"
COMPONENT_CLUSTER_ROLE = "clusterrole"
COMPONENT_CLUSTER_ROLE_BINDING = "clusterrolebinding"
COMPONENT_NO_CACHE_SERVICE = "no-cache-service"
COMPONENT_CACHE_SERVICE = "cache-service"
COMPONENT_VARNISH = "varnish"
COMPONENT_VCL_FILE_CONFIGMAP = "vcl-file-configmap"
COMPONENT_POD_DISRUPTION_BUDGET = "poddisruptionbudget"

# Varnish process
VARNISH_PORT = 6081
VARNISH_PORT_NAME = "varnish"
VARNISH_ADMIN_ADDRESS = "127.0.0.1:6082"
VARNISH_SECRET_FILE = "/etc/varnish/secret"
VCL_CONFIG_DIR = "/etc/varnish"
VARNISH_CONTAINER_NAME = "varnish"
VARNISH_CONTROLLER_CONTAINER_NAME = "varnish-controller"
VARNISH_CONTROLLER_METRICS_PORT = 8235

# VCL sources
DEFAULT_ENTRYPOINT_FILE = "entrypoint.vcl"
BACKENDS_TEMPLATE_FILE = "backends.vcl.tmpl"
TEMPLATE_SUFFIX = ".tmpl"
VCL_FILE_SUFFIX = ".vcl"

# Pod annotations written by the sidecar
ANNOTATION_CONFIGMAP_VERSION = f"{GROUP}/configmap-version"
ANNOTATION_ACTIVE_VCL_CONFIGMAP_VERSION = f"{GROUP}/active-vcl-configmap-version"

# Event reasons
EVENT_REASON_VCL_COMPILATION_ERROR = "VCLCompilationError"
EVENT_REASON_RELOAD_ERROR = "ReloadError"
