"""FastAPI PKI Service - Main application."""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
import logging
import secrets

from fastapi import FastAPI, HTTPException, status, Depends, Header, Query
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request

from .. import __version__
from ..config import PKISettings
from ..errors import PKIError
from .models import (
    CertificateDetails,
    CertificateRequest,
    CreateCARequest,
    ErrorResponse,
    ExportRequest,
    HealthResponse,
    InstallResult,
    OperationResult,
)
from .service import PKIService

STATUS_BY_KIND = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "corrupt": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "crypto_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "permission_denied": status.HTTP_403_FORBIDDEN,
    "unsupported": status.HTTP_501_NOT_IMPLEMENTED,
    "io_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "operation_timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


@lru_cache
def get_settings() -> PKISettings:
    return PKISettings.from_env()


@lru_cache
def get_service() -> PKIService:
    return PKIService(get_settings())


app_settings = get_settings()

# Configure logging
logging.basicConfig(
    level=app_settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="localca PKI Service",
    description="Local certificate authority: CA creation, leaf issuance, export and trust-store installation",
    version=__version__,
)

if app_settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["X-API-Key", "Content-Type"],
    )


def verify_api_key(
    x_api_key: Optional[str] = Header(None),
    settings: PKISettings = Depends(get_settings)
) -> Optional[str]:
    """
    Verify the API key header for mutating endpoints.

    Only enforced when an api_key is configured.
    """
    if settings.api_key is None:
        return None
    if not x_api_key or not secrets.compare_digest(x_api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Valid API key required"
        )
    return x_api_key


@app.exception_handler(PKIError)
async def pki_error_handler(request: Request, exc: PKIError) -> JSONResponse:
    """Render engine errors with a status code per error kind."""
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc}")
    body = ErrorResponse(**exc.to_dict())
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _attachment(filename: str) -> dict:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


@app.get("/", response_model=dict)
async def root():
    """Root endpoint."""
    return {
        "service": "localca PKI Service",
        "version": __version__,
        "status": "operational"
    }


@app.get("/health", response_model=HealthResponse)
def health_check(service: PKIService = Depends(get_service)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        ca_count=len(service.list_cas()),
        certificate_count=len(service.list_certificates()),
        trust_store=service.trust_store.name,
        privileged=service.is_privileged(),
        timestamp=datetime.now(timezone.utc)
    )


@app.get("/system/privileged", response_model=dict)
def is_privileged(service: PKIService = Depends(get_service)):
    """Whether this process may install CAs into the trust store."""
    return {"privileged": service.is_privileged(), "trust_store": service.trust_store.name}


# ============================================================================
# Certificate Authorities
# ============================================================================

@app.post("/cas", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_ca(
    request: CreateCARequest,
    service: PKIService = Depends(get_service),
    api_key: Optional[str] = Depends(verify_api_key)
):
    """Create a new self-signed CA."""
    subject = request.model_dump(exclude={"expiry_days"})
    name = service.create_ca(subject, request.expiry_days)
    return {"name": name}


@app.get("/cas", response_model=list[str])
def list_cas(service: PKIService = Depends(get_service)):
    """List CA names."""
    return service.list_cas()


@app.get("/cas/{name}", response_model=CertificateDetails)
def get_ca(name: str, service: PKIService = Depends(get_service)):
    """Get CA certificate details."""
    return service.inspect_ca(name)


@app.delete("/cas/{name}", response_model=OperationResult)
def delete_ca(
    name: str,
    service: PKIService = Depends(get_service),
    api_key: Optional[str] = Depends(verify_api_key)
):
    """Delete a CA. Certificates it issued are kept and become orphaned."""
    orphans = service.list_certificates(issuer_ca_name=name)
    service.delete_ca(name)
    message = f"CA '{name}' deleted"
    if orphans:
        message += f"; {len(orphans)} certificate(s) are now orphaned"
    return OperationResult(message=message)


@app.get("/cas/{name}/certificate")
def download_ca_certificate(
    name: str,
    format: str = Query("pem", pattern="^(pem|der)$"),
    service: PKIService = Depends(get_service)
):
    """Download the CA certificate in PEM or DER format."""
    if format == "der":
        return Response(
            content=service.get_ca_certificate_der(name),
            media_type="application/x-x509-ca-cert",
            headers=_attachment(f"{name}.der")
        )
    return Response(
        content=service.get_ca_certificate_pem(name),
        media_type="application/x-pem-file",
        headers=_attachment(f"{name}.pem")
    )


@app.post("/cas/{name}/install", response_model=InstallResult)
def install_ca(
    name: str,
    service: PKIService = Depends(get_service),
    api_key: Optional[str] = Depends(verify_api_key)
):
    """Install the CA into this host's trust store (requires elevated privileges)."""
    return service.install_ca(name)


@app.get("/cas/{name}/installer")
def download_installer(name: str, service: PKIService = Depends(get_service)):
    """Download a self-contained installer archive for the CA."""
    artifact = service.generate_installer(name)
    return Response(
        content=artifact.content,
        media_type="application/zip",
        headers=_attachment(artifact.filename)
    )


# ============================================================================
# Leaf certificates
# ============================================================================

@app.post("/certificates", response_model=dict, status_code=status.HTTP_201_CREATED)
def create_certificate(
    request: CertificateRequest,
    service: PKIService = Depends(get_service),
    api_key: Optional[str] = Depends(verify_api_key)
):
    """Issue a leaf certificate signed by a stored CA."""
    identifier = service.create_certificate(
        common_name=request.common_name,
        sans=request.sans,
        issuer_ca_name=request.issuer_ca_name,
        expiry_days=request.expiry_days
    )
    return {"identifier": identifier}


@app.get("/certificates", response_model=list[str])
def list_certificates(
    issuer: Optional[str] = Query(None, description="Only certificates issued by this CA"),
    service: PKIService = Depends(get_service)
):
    """List leaf certificate identifiers."""
    return service.list_certificates(issuer_ca_name=issuer)


@app.get("/certificates/orphaned", response_model=list[str])
def list_orphaned_certificates(service: PKIService = Depends(get_service)):
    """List certificates whose issuing CA is missing or was replaced."""
    return service.list_orphaned_certificates()


@app.get("/certificates/{identifier}", response_model=CertificateDetails)
def get_certificate(identifier: str, service: PKIService = Depends(get_service)):
    """Get certificate details."""
    return service.inspect_certificate(identifier)


@app.delete("/certificates/{identifier}", response_model=OperationResult)
def delete_certificate(
    identifier: str,
    service: PKIService = Depends(get_service),
    api_key: Optional[str] = Depends(verify_api_key)
):
    """Delete a leaf certificate and its key."""
    service.delete_certificate(identifier)
    return OperationResult(message=f"Certificate '{identifier}' deleted")


@app.post("/certificates/{identifier}/export")
def export_certificate(
    identifier: str,
    request: ExportRequest,
    format: str = Query("pkcs12", pattern="^(pkcs12|pem)$"),
    service: PKIService = Depends(get_service),
    api_key: Optional[str] = Depends(verify_api_key)
):
    """
    Export a certificate.

    pkcs12 returns certificate, issuing CA and private key; pem returns
    the certificate chain only.
    """
    if format == "pem":
        return Response(
            content=service.export_chain_pem(identifier),
            media_type="application/x-pem-file",
            headers=_attachment(f"{identifier}-chain.pem")
        )
    return Response(
        content=service.export_bundle(identifier, request.password),
        media_type="application/x-pkcs12",
        headers=_attachment(f"{identifier}.pfx")
    )


def serve(host: str = "127.0.0.1", port: int = 8000, settings: Optional[PKISettings] = None):
    """Run the API with uvicorn, optionally with settings other than the environment's."""
    import uvicorn

    settings = settings or app_settings
    if settings is not app_settings:
        service = PKIService(settings)
        app.dependency_overrides[get_settings] = lambda: settings
        app.dependency_overrides[get_service] = lambda: service

    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    serve()
