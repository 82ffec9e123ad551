# clinic/routers/users.py
#
# This router handles staff accounts: the caller's own profile, credentials
# and signing certificate, and the admin-only account management that keeps
# Cognito and the profile documents in step.

import logging
from typing import Any, Dict, List

import boto3
from botocore.exceptions import ClientError
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from ..audit import log_action
from ..config import get_settings
from ..crud import (
    db_create_user_profile,
    db_get_user_by_id,
    db_list_users_by_role,
    db_revoke_sessions,
    db_set_user_active,
    db_update_user,
)
from ..errors import CertificatePasswordError
from ..models import EmailChange, PasswordChange, SelfProfileUpdate, StatusToggle, UserCreate, UserProfile, UserUpdate
from ..security import ensure_role, get_current_user, require_recent_login
from ..signatures import store_certificate
from ..timeutils import now_ms

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])

settings = get_settings()

cognito_client = boto3.client('cognito-idp', region_name=settings.cognito_region or settings.aws_region)


def _cognito_error_detail(error: ClientError) -> str:
    code = error.response.get('Error', {}).get('Code')
    if code == 'UsernameExistsException':
        return "El correo ya está registrado."
    if code == 'InvalidPasswordException':
        return "La contraseña no cumple la política de seguridad."
    return "Error del proveedor de identidad."


# --- Own profile ---

@router.get("/users/me", response_model=UserProfile, tags=["User Profile"])
async def read_users_me(current_user: Dict[str, Any] = Depends(get_current_user)):
    """Get profile information for the currently authenticated user."""
    return UserProfile(**current_user)


@router.put("/users/me", response_model=UserProfile, tags=["User Profile"])
def update_users_me(
    profile: SelfProfileUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    fields = profile.model_dump(exclude_none=True)
    if not fields:
        return UserProfile(**current_user)
    try:
        updated = db_update_user(current_user['id'], fields)
        return UserProfile(**updated)
    except Exception as e:
        logger.error("USERS: Error updating own profile %s: %s", current_user['id'], e)
        raise HTTPException(status_code=500, detail="Error al actualizar el perfil.")


@router.put("/users/me/email", response_model=UserProfile, tags=["User Profile"])
def change_my_email(
    change: EmailChange,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    require_recent_login(current_user)
    try:
        cognito_client.admin_update_user_attributes(
            UserPoolId=settings.cognito_userpool_id,
            Username=current_user['email'],
            UserAttributes=[
                {'Name': 'email', 'Value': change.newEmail},
                {'Name': 'email_verified', 'Value': 'true'},
            ],
        )
        updated = db_update_user(current_user['id'], {'email': change.newEmail})
        log_action(current_user['email'], 'CAMBIO_CORREO', f"Correo actualizado a {change.newEmail}")
        return UserProfile(**updated)
    except ClientError as e:
        logger.error("USERS: Cognito rejected email change for %s: %s", current_user['id'], e)
        raise HTTPException(status_code=400, detail=_cognito_error_detail(e))
    except Exception as e:
        logger.error("USERS: Error changing email for %s: %s", current_user['id'], e)
        raise HTTPException(status_code=500, detail="Error al actualizar el correo.")


@router.put("/users/me/password", tags=["User Profile"])
def change_my_password(
    change: PasswordChange,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    require_recent_login(current_user)
    try:
        cognito_client.admin_set_user_password(
            UserPoolId=settings.cognito_userpool_id,
            Username=current_user['email'],
            Password=change.newPassword,
            Permanent=True,
        )
    except ClientError as e:
        logger.error("USERS: Cognito rejected password change for %s: %s", current_user['id'], e)
        raise HTTPException(status_code=400, detail=_cognito_error_detail(e))
    log_action(current_user['email'], 'CAMBIO_PASSWORD', "Contraseña actualizada por el usuario.")
    return {"message": "Contraseña actualizada."}


@router.post("/users/me/certificate", response_model=UserProfile, tags=["User Profile"])
async def upload_my_certificate(
    file: UploadFile = File(...),
    password: str = Form(...),
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Stores a .p12 signing certificate. The password is only used to read it."""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Archivo vacío.")
    try:
        metadata = store_certificate(current_user['id'], content, password)
        updated = db_update_user(current_user['id'], {'digitalCertData': metadata})
    except CertificatePasswordError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.error("USERS: Error storing certificate for %s: %s", current_user['id'], e)
        raise HTTPException(status_code=500, detail="Error al guardar el certificado.")
    log_action(current_user['email'], 'CARGA_CERTIFICADO', f"Certificado {metadata['serialNumber']} registrado.")
    return UserProfile(**updated)


@router.get("/users/doctors", response_model=List[UserProfile])
def list_doctors(current_user: Dict[str, Any] = Depends(get_current_user)):
    try:
        return [UserProfile(**d) for d in db_list_users_by_role('doctor', active_only=True)]
    except Exception as e:
        logger.error("USERS: Error listing doctors: %s", e)
        raise HTTPException(status_code=500, detail="Error al cargar doctores.")


# --- Admin account management ---

@router.post("/users", response_model=UserProfile, status_code=201)
def create_user(
    new_user: UserCreate,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    ensure_role(current_user, 'admin')
    try:
        response = cognito_client.admin_create_user(
            UserPoolId=settings.cognito_userpool_id,
            Username=new_user.email,
            UserAttributes=[
                {'Name': 'email', 'Value': new_user.email},
                {'Name': 'email_verified', 'Value': 'true'},
                {'Name': 'name', 'Value': new_user.name},
            ],
            MessageAction='SUPPRESS',
        )
        cognito_client.admin_set_user_password(
            UserPoolId=settings.cognito_userpool_id,
            Username=new_user.email,
            Password=new_user.password,
            Permanent=True,
        )
        attributes = {a['Name']: a['Value'] for a in response['User'].get('Attributes', [])}
        user_id = attributes.get('sub') or response['User']['Username']
        profile = db_create_user_profile(user_id, new_user.email, new_user.name, new_user.role, new_user.specialty)
    except ClientError as e:
        logger.error("USERS: Cognito rejected account %s: %s", new_user.email, e)
        raise HTTPException(status_code=400, detail=_cognito_error_detail(e))
    except Exception as e:
        logger.error("USERS: Error creating account %s: %s", new_user.email, e)
        raise HTTPException(status_code=500, detail="Error al crear el usuario.")

    log_action(current_user['email'], 'CREACION_USUARIOS', f"Usuario {new_user.email} creado con rol {new_user.role}")
    return UserProfile(**profile)


@router.put("/users/{user_id}", response_model=UserProfile)
def update_user(
    user_id: str,
    changes: UserUpdate,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    ensure_role(current_user, 'admin')
    fields = changes.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="Sin cambios.")
    try:
        if not db_get_user_by_id(user_id):
            raise HTTPException(status_code=404, detail="Usuario no encontrado.")
        updated = db_update_user(user_id, fields)
    except HTTPException as e:
        raise e
    except Exception as e:
        logger.error("USERS: Error updating user %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Error al actualizar el usuario.")
    log_action(current_user['email'], 'EDICION_USUARIOS', f"Usuario {updated.get('email')} actualizado: {sorted(fields)}")
    return UserProfile(**updated)


@router.post("/users/{user_id}/toggle-status", response_model=UserProfile)
def toggle_user_status(
    user_id: str,
    toggle: StatusToggle,
    current_user: Dict[str, Any] = Depends(get_current_user)
):
    """Activates or deactivates an account. Deactivation also ends its open sessions."""
    ensure_role(current_user, 'admin')
    if user_id == current_user['id'] and not toggle.isActive:
        raise HTTPException(status_code=400, detail="No puede desactivar su propia cuenta.")
    try:
        if not db_get_user_by_id(user_id):
            raise HTTPException(status_code=404, detail="Usuario no encontrado.")
        updated = db_set_user_active(user_id, toggle.isActive, toggle.reason)
        if not toggle.isActive:
            db_revoke_sessions(user_id, now_ms() / 1000)
    except HTTPException as e:
        raise e
    except Exception as e:
        logger.error("USERS: Error toggling status for %s: %s", user_id, e)
        raise HTTPException(status_code=500, detail="Error al cambiar el estado.")

    action = 'ACTIVACION_USUARIOS' if toggle.isActive else 'INACTIVACION_USUARIOS'
    details = f"Usuario {updated.get('email')}"
    if toggle.reason:
        details += f". Motivo: {toggle.reason}"
    log_action(current_user['email'], action, details)
    return UserProfile(**updated)
