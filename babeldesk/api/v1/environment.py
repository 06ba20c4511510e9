"""Environment check endpoints."""

from fastapi import APIRouter, Depends

from babeldesk.api.deps import get_provisioner
from babeldesk.environment.provisioner import EnvironmentProvisioner, EnvironmentSummary

router = APIRouter()


@router.post("/environment/ensure", response_model=EnvironmentSummary)
async def ensure_environment(provisioner: EnvironmentProvisioner = Depends(get_provisioner)):
    """Resolve the translation toolchain. Stage updates go out as ``environment`` events."""
    return await provisioner.ensure()


@router.post("/environment/reset")
async def reset_environment(provisioner: EnvironmentProvisioner = Depends(get_provisioner)):
    provisioner.reset()
    return {"reset": True}
