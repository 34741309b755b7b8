"""apkintrospect: installed-package introspection and signer fingerprinting.

Builds an immutable ``InstalledArtifact`` record for a locally installed
package from its APK and the installer-reported metadata:
  - ``uses-sdk`` range parsed from the compiled binary manifest
  - native-library ABIs found under ``lib/<abi>/``
  - main/patch expansion (OBB) files with their content hashes
  - whole-archive content hash
  - signing-certificate fingerprint matching the repository server
"""

__version__ = "0.1.0"
__description__ = "Installed-package introspection and signing-certificate fingerprinting"

from apkintrospect.core.builder import InstalledArtifactBuilder
from apkintrospect.core.errors import ArtifactBuildFailure, FingerprintUnavailable
from apkintrospect.models.artifacts import InstalledArtifact
from apkintrospect.models.package_info import InstalledPackageInfo

__all__ = [
    "InstalledArtifactBuilder",
    "InstalledArtifact",
    "InstalledPackageInfo",
    "ArtifactBuildFailure",
    "FingerprintUnavailable",
    "__version__",
]
