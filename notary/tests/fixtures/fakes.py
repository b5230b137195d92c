from notary.tests.fixtures.pdf_factory import png_bytes


class FakeIssuer:
    """
    Deterministic in-memory issuer.

    Wraps the claim in a proof envelope without any cryptography, and keeps
    every claim it was asked to sign.
    """

    def __init__(self, *, override_fingerprint: str = None):
        self.claims = []
        self._override = override_fingerprint

    def sign(self, claim):
        self.claims.append(claim)

        proof = dict(claim)
        if self._override is not None:
            subject = dict(proof["credentialSubject"])
            subject["contentFingerprint"] = self._override
            proof["credentialSubject"] = subject

        proof["proof"] = {
            "type": "FakeSignature2024",
            "proofValue": "not-a-signature",
        }
        return proof


class FakeCodeRenderer:
    """Returns a blank PNG and records the addresses it rendered."""

    def __init__(self, image: bytes = None):
        self.addresses = []
        self._image = image if image is not None else png_bytes()

    def render(self, address: str) -> bytes:
        self.addresses.append(address)
        return self._image
