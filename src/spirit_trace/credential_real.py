"""Coconut Threshold Credential Backend.

Threshold blind Pointcheval-Sanders signatures over BLS12-381 (Coconut),
with key shares dealt by a trusted dealer.

Keys:
    Secret (x, y_1..y_q) is Shamir-shared with polynomials of degree t - 1.
    Aggregate verification key: alpha = x*g2, beta_j = y_j*g2.

Issuance:
    1. token_request: h = H_G1(cm). The user picks an ElGamal key d,
       gamma = d*g1, and encrypts every attribute as
       (a_j, b_j) = (k_j*g1, k_j*gamma + m_j*h). A Fiat-Shamir proof shows
       the ciphertexts and cm hide the same attributes.
    2. issue: issuer i checks the proof and returns
       (a~, b~) = (sum y_ij*a_j, x_i*h + sum y_ij*b_j).
    3. aggregate_unblind: s_i = b~ - d*a~ = (x_i + sum y_ij*m_j)*h, then
       s = sum l_i*s_i over the Lagrange basis of the issuer indices.

Well-formedness (prove / verify):
    kappa = t*g2 + alpha + sum m_j*beta_j, nu = t*h, together with a proof
    that the m_j in kappa are the ones committed in cm, and the pairing check
    e(h, kappa) == e(s + nu, g2).

Reference: Sonnino et al., "Coconut: Threshold Issuance Selective
Disclosure Credentials with Applications to Distributed Ledgers" (NDSS 2019).
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from functools import lru_cache

import structlog
from py_ecc.optimized_bls12_381 import Z1, Z2, add, is_inf

from spirit_trace._primitives import (
    CURVE_ORDER,
    G1_GENERATOR,
    G1_SIZE,
    G2_GENERATOR,
    G2_SIZE,
    SCALAR_SIZE,
    Point,
    challenge,
    g1_from_bytes,
    g1_to_bytes,
    g2_from_bytes,
    g2_to_bytes,
    hash_to_g1,
    lagrange_coefficient,
    linear_combination,
    mul,
    negate,
    pack,
    pairing_product_is_one,
    random_scalar,
    scalar_from_bytes,
    scalar_to_bytes,
    unpack,
)
from spirit_trace.credential import (
    AggregationError,
    BlindRequest,
    Credential,
    CredentialScheme,
    IssuanceError,
    Issuer,
    PartialToken,
    PublicParameters,
    Randomizer,
    Signature,
    TokenProof,
    UserState,
    VerificationResult,
    check_partials,
    deal_shares,
    validate_threshold,
)
from spirit_trace.pedersen import Commitment, opens

logger = structlog.get_logger(__name__)

# Domain separation labels
_LABEL_H = b"spirit-coconut-h-v1"
_LABEL_REQUEST = b"spirit-coconut-request-v1"
_LABEL_SHOW = b"spirit-coconut-show-v1"


def _request_sizes(q: int) -> list[int]:
    # gamma | (a_j, b_j) * q | c | r_o | r_k * q | r_m * q
    return [G1_SIZE] + [G1_SIZE] * (2 * q) + [SCALAR_SIZE] * (2 + 2 * q)


def _proof_sizes(q: int) -> list[int]:
    # kappa | nu | c | r_t | r_o | r_m * q
    return [G2_SIZE, G1_SIZE] + [SCALAR_SIZE] * (3 + q)


@lru_cache(maxsize=32)
def _verification_key(encoded: tuple[bytes, ...]) -> tuple[Point, tuple[Point, ...]]:
    points = [g2_from_bytes(item) for item in encoded]
    return points[0], tuple(points[1:])


def _base_point(commitment: Commitment) -> Point:
    """h = H_G1(cm): the common base every issuer signs over."""
    return hash_to_g1(commitment.value, _LABEL_H)


class CoconutCredentialScheme(CredentialScheme):
    """Coconut threshold credential backend.

    Issuers never learn the attributes (ElGamal-blinded under a key only the
    user holds), any t distinct issuers suffice, and fewer than t partials
    aggregate to a signature that fails the pairing check.
    """

    @property
    def name(self) -> str:
        return "coconut"

    def setup(
        self,
        num_issuers: int,
        num_shares: int,
        threshold: int,
        degree: int,
        num_identity_attributes: int,
    ) -> tuple[PublicParameters, list[Issuer]]:
        """Deal (x, y_1..y_q) shares and publish the aggregate key."""
        validate_threshold(num_issuers, num_shares, threshold, degree, num_identity_attributes)
        q = 1 + num_identity_attributes
        masters, shares = deal_shares(1 + q, degree, num_shares)
        verification_key = tuple(g2_to_bytes(mul(G2_GENERATOR, secret)) for secret in masters)
        pp = PublicParameters(
            backend=self.name,
            threshold=threshold,
            num_shares=num_shares,
            num_attributes=q,
            verification_key=verification_key,
        )
        issuers = [Issuer(i, shares[i], self.name) for i in range(1, num_issuers + 1)]
        logger.debug("coconut_keys_dealt", threshold=threshold, num_shares=num_shares, num_issuers=num_issuers)
        return pp, issuers

    # -------------------------------------------------------------------------
    # Blind request
    # -------------------------------------------------------------------------

    def token_request(
        self,
        state: UserState,
        commitment: Commitment,
        pp: PublicParameters,
    ) -> tuple[BlindRequest, Randomizer]:
        """ElGamal-blind the attributes and prove consistency with cm."""
        self._check_backend(pp)
        if not opens(pp.pedersen, commitment, state.attributes, state.opening):
            raise IssuanceError("Registration state does not open the commitment")

        params = pp.pedersen
        attributes = state.attributes
        h = _base_point(commitment)
        d = random_scalar()
        gamma = mul(G1_GENERATOR, d)
        ks = [random_scalar() for _ in attributes]
        ciphertexts = [(mul(G1_GENERATOR, k), add(mul(gamma, k), mul(h, m))) for k, m in zip(ks, attributes)]

        # Witnesses
        w_o = random_scalar()
        w_k = [random_scalar() for _ in attributes]
        w_m = [random_scalar() for _ in attributes]
        cw = linear_combination([(params.opening_base, w_o), *zip(params.attribute_bases, w_m)], Z1)
        aw = [mul(G1_GENERATOR, wk) for wk in w_k]
        bw = [add(mul(gamma, wk), mul(h, wm)) for wk, wm in zip(w_k, w_m)]

        c = self._request_challenge(commitment, h, gamma, ciphertexts, cw, aw, bw)

        r_o = (w_o - c * state.opening) % CURVE_ORDER
        r_k = [(wk - c * k) % CURVE_ORDER for wk, k in zip(w_k, ks)]
        r_m = [(wm - c * m) % CURVE_ORDER for wm, m in zip(w_m, attributes)]

        chunks = [g1_to_bytes(gamma)]
        for a, b in ciphertexts:
            chunks.extend((g1_to_bytes(a), g1_to_bytes(b)))
        chunks.extend(scalar_to_bytes(v) for v in [c, r_o, *r_k, *r_m])

        request = BlindRequest(commitment=commitment, request_data=pack(chunks))
        return request, Randomizer(state=state, commitment=commitment, blinding=d)

    @staticmethod
    def _request_challenge(
        commitment: Commitment,
        h: Point,
        gamma: Point,
        ciphertexts: Sequence[tuple[Point, Point]],
        cw: Point,
        aw: Sequence[Point],
        bw: Sequence[Point],
    ) -> int:
        parts = [commitment.value, g1_to_bytes(h), g1_to_bytes(gamma)]
        for a, b in ciphertexts:
            parts.extend((g1_to_bytes(a), g1_to_bytes(b)))
        parts.append(g1_to_bytes(cw))
        parts.extend(g1_to_bytes(p) for p in aw)
        parts.extend(g1_to_bytes(p) for p in bw)
        return challenge(_LABEL_REQUEST, *parts)

    def _open_request(
        self, request: BlindRequest, pp: PublicParameters
    ) -> tuple[Point, Point, list[tuple[Point, Point]]]:
        """Decode a blind request and check its proof.

        Returns:
            Tuple of (h, gamma, ciphertexts)

        Raises:
            IssuanceError: If the request is malformed or the proof fails
        """
        q = pp.num_attributes
        try:
            chunks = unpack(request.request_data, _request_sizes(q))
            gamma = g1_from_bytes(chunks[0])
            points = [g1_from_bytes(chunk) for chunk in chunks[1 : 1 + 2 * q]]
            scalars = [scalar_from_bytes(chunk) for chunk in chunks[1 + 2 * q :]]
            cm_point = request.commitment.point()
        except ValueError as e:
            raise IssuanceError(f"Malformed blind request: {e}") from e

        ciphertexts = list(zip(points[0::2], points[1::2]))
        c, r_o = scalars[0], scalars[1]
        r_k = scalars[2 : 2 + q]
        r_m = scalars[2 + q :]

        params = pp.pedersen
        h = _base_point(request.commitment)
        cw = linear_combination([(cm_point, c), (params.opening_base, r_o), *zip(params.attribute_bases, r_m)], Z1)
        aw = [add(mul(a, c), mul(G1_GENERATOR, rk)) for (a, _), rk in zip(ciphertexts, r_k)]
        bw = [
            linear_combination([(b, c), (gamma, rk), (h, rm)], Z1)
            for (_, b), rk, rm in zip(ciphertexts, r_k, r_m)
        ]

        if self._request_challenge(request.commitment, h, gamma, ciphertexts, cw, aw, bw) != c:
            raise IssuanceError("Blind request proof failed")
        return h, gamma, ciphertexts

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    def issue(self, request: BlindRequest, issuer: Issuer, pp: PublicParameters) -> PartialToken:
        """Check the request proof and sign the ciphertexts homomorphically."""
        self._check_backend(pp, issuer)
        try:
            h, _, ciphertexts = self._open_request(request, pp)
        except IssuanceError:
            logger.info("blind_request_rejected", issuer_index=issuer.index)
            raise

        x_i, *y_i = issuer._share
        a_tilde = linear_combination([(a, y) for (a, _), y in zip(ciphertexts, y_i)], Z1)
        b_tilde = linear_combination([(h, x_i), *((b, y) for (_, b), y in zip(ciphertexts, y_i))], Z1)
        return PartialToken(issuer_index=issuer.index, token_data=g1_to_bytes(a_tilde) + g1_to_bytes(b_tilde))

    def aggregate_unblind(
        self,
        partials: Sequence[PartialToken],
        randomizer: Randomizer,
        pp: PublicParameters,
    ) -> Credential:
        """Decrypt every partial signature and Lagrange-combine them."""
        self._check_backend(pp)
        indices = check_partials(partials, pp)
        d = randomizer.blinding
        h = _base_point(randomizer.commitment)

        s = Z1
        for partial in partials:
            try:
                a_bytes, b_bytes = unpack(partial.token_data, [G1_SIZE, G1_SIZE])
                a_tilde, b_tilde = g1_from_bytes(a_bytes), g1_from_bytes(b_bytes)
            except ValueError as e:
                raise AggregationError(f"Malformed partial token from issuer {partial.issuer_index}: {e}") from e
            s_i = add(b_tilde, negate(mul(a_tilde, d)))
            s = add(s, mul(s_i, lagrange_coefficient(partial.issuer_index, indices)))

        signature = Signature(value=g1_to_bytes(h) + g1_to_bytes(s))
        return Credential(commitment=randomizer.commitment, signature=signature, state=randomizer.state)

    # -------------------------------------------------------------------------
    # Well-formedness proof
    # -------------------------------------------------------------------------

    @staticmethod
    def _show_challenge(
        commitment: Commitment,
        signature: Signature,
        kappa: Point,
        nu: Point,
        aw: Point,
        bw: Point,
        cw: Point,
    ) -> int:
        return challenge(
            _LABEL_SHOW,
            commitment.value,
            signature.value,
            g2_to_bytes(kappa),
            g1_to_bytes(nu),
            g2_to_bytes(aw),
            g1_to_bytes(bw),
            g1_to_bytes(cw),
        )

    def prove(self, credential: Credential, randomizer: Randomizer, pp: PublicParameters) -> TokenProof:
        """Prove knowledge of the signed attributes and their equality with cm."""
        self._check_backend(pp)
        alpha, betas = _verification_key(pp.verification_key)
        params = pp.pedersen
        state = credential.state
        h = g1_from_bytes(credential.signature.value[:G1_SIZE])

        t = random_scalar()
        kappa = linear_combination([(G2_GENERATOR, t), *zip(betas, state.attributes)], alpha)
        nu = mul(h, t)

        w_t = random_scalar()
        w_o = random_scalar()
        w_m = [random_scalar() for _ in state.attributes]
        aw = linear_combination([(G2_GENERATOR, w_t), *zip(betas, w_m)], alpha)
        bw = mul(h, w_t)
        cw = linear_combination([(params.opening_base, w_o), *zip(params.attribute_bases, w_m)], Z1)

        c = self._show_challenge(credential.commitment, credential.signature, kappa, nu, aw, bw, cw)

        r_t = (w_t - c * t) % CURVE_ORDER
        r_o = (w_o - c * state.opening) % CURVE_ORDER
        r_m = [(wm - c * m) % CURVE_ORDER for wm, m in zip(w_m, state.attributes)]

        chunks = [g2_to_bytes(kappa), g1_to_bytes(nu)]
        chunks.extend(scalar_to_bytes(v) for v in [c, r_t, r_o, *r_m])
        return TokenProof(proof_data=pack(chunks))

    def verify(
        self,
        credential: Credential,
        proof: TokenProof,
        request: BlindRequest,
        pp: PublicParameters,
    ) -> VerificationResult:
        """Verify the credential signature and its binding to the request.

        Checks:
        1. Credential commitment matches the request
        2. Signature base h is H_G1(cm) and not the identity
        3. Proof of knowledge (Fiat-Shamir) recomputes
        4. e(h, kappa) == e(s + nu, g2)
        """
        start_time = time.time()

        def result(error: str | None) -> VerificationResult:
            return VerificationResult(
                valid=error is None,
                error_message=error,
                verification_time_ms=(time.time() - start_time) * 1000,
            )

        self._check_backend(pp)
        q = pp.num_attributes
        if credential.commitment != request.commitment:
            return result("Credential commitment does not match request")

        try:
            h_bytes, s_bytes = unpack(credential.signature.value, [G1_SIZE, G1_SIZE])
            h, s = g1_from_bytes(h_bytes), g1_from_bytes(s_bytes)
            chunks = unpack(proof.proof_data, _proof_sizes(q))
            kappa = g2_from_bytes(chunks[0])
            nu = g1_from_bytes(chunks[1])
            c, r_t, r_o, *r_m = (scalar_from_bytes(chunk) for chunk in chunks[2:])
            cm_point = credential.commitment.point()
        except ValueError as e:
            return result(f"Malformed credential or proof: {e}")

        if is_inf(h) or h_bytes != g1_to_bytes(_base_point(request.commitment)):
            return result("Signature base does not match request commitment")

        alpha, betas = _verification_key(pp.verification_key)
        params = pp.pedersen
        aw = linear_combination(
            [(kappa, c), (G2_GENERATOR, r_t), (alpha, 1 - c), *zip(betas, r_m)],
            Z2,
        )
        bw = linear_combination([(nu, c), (h, r_t)], Z1)
        cw = linear_combination([(cm_point, c), (params.opening_base, r_o), *zip(params.attribute_bases, r_m)], Z1)

        if self._show_challenge(credential.commitment, credential.signature, kappa, nu, aw, bw, cw) != c:
            return result("Proof of knowledge failed")

        if not pairing_product_is_one([(h, kappa), (negate(add(s, nu)), G2_GENERATOR)]):
            return result("Pairing check failed")

        return result(None)
