"""Pydantic schemas package."""

from billing_recon.schemas.base import BaseResponse, DisabledResponse, ListResponse
from billing_recon.schemas.payments import (
    ApproveMatchRequest,
    BackupResponse,
    BulkApproveRequest,
    BulkApproveResponse,
    CandidateResponse,
    CleanupResponse,
    IngestResponse,
    ManualActionRequest,
    PaymentDetailsResponse,
    PaymentImportResponse,
    PaymentListResponse,
    PaymentResponse,
    PaymentSnapshot,
    ResetMatchesResponse,
    RestoreResponse,
)
from billing_recon.schemas.proformas import ProformaResponse, ProformaSyncRequest

__all__ = [
    "ApproveMatchRequest",
    "BackupResponse",
    "BaseResponse",
    "BulkApproveRequest",
    "BulkApproveResponse",
    "CandidateResponse",
    "CleanupResponse",
    "DisabledResponse",
    "IngestResponse",
    "ListResponse",
    "ManualActionRequest",
    "PaymentDetailsResponse",
    "PaymentImportResponse",
    "PaymentListResponse",
    "PaymentResponse",
    "PaymentSnapshot",
    "ProformaResponse",
    "ProformaSyncRequest",
    "ResetMatchesResponse",
    "RestoreResponse",
]
