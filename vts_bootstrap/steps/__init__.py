from .step_10_setup_users import SetupUsersStep
from .step_20_install_packages import InstallPackagesStep
from .step_30_install_gpu_drivers import InstallGpuDriversStep
from .step_40_install_rmm import InstallRmmStep, UninstallRmmStep
from .step_50_set_timezone import SetTimezoneStep
from .step_60_install_docker import InstallDockerStep
from .step_70_install_rdm import InstallRdmStep
from .step_80_postrun import PostRunStep
from .step_90_mark_done import MarkDoneStep

__all__ = [
    "SetupUsersStep",
    "InstallPackagesStep",
    "InstallGpuDriversStep",
    "InstallRmmStep",
    "UninstallRmmStep",
    "SetTimezoneStep",
    "InstallDockerStep",
    "InstallRdmStep",
    "PostRunStep",
    "MarkDoneStep",
]
