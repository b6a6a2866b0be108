"""Build steps and the runner that drives them."""

from pvelxc.steps.base import Step, StepAction
from pvelxc.steps.connect import StepConnect
from pvelxc.steps.create import StepCreateContainer
from pvelxc.steps.finalize import StepFinalize
from pvelxc.steps.ip_addr import StepGetContainerIpAddr
from pvelxc.steps.provision import StepProvision
from pvelxc.steps.runner import StepRunner
from pvelxc.steps.start import StepStartContainer
from pvelxc.steps.success import StepSuccess

__all__ = [
    "Step",
    "StepAction",
    "StepRunner",
    "StepCreateContainer",
    "StepStartContainer",
    "StepConnect",
    "StepGetContainerIpAddr",
    "StepProvision",
    "StepFinalize",
    "StepSuccess",
]
