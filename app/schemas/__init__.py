from app.schemas.verify import VerifyResponse, HashLookupResponse, CsrfTokenResponse
from app.schemas.scan import ScanRequest, ScanResponse, ClaimRequest, ClaimResponse
