"""Command-line interface for Athar."""
import argparse
import base64
import io
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .codec import parse_payload, serialize_payload, valid_gps
from .registry import registration_record
from .types import (
    ComparisonOptions,
    ContainerFormat,
    ContentDigest,
    Payload,
    PixelBuffer,
    RegisteredOriginal,
    RegistrationSignature,
)
from .verify import Athar


def _read_file(path: str, what: str = "File") -> bytes:
    file_path = Path(path)
    if not file_path.exists():
        print(f"Error: {what} not found: {path}", file=sys.stderr)
        sys.exit(1)
    return file_path.read_bytes()


def _load_image(path: str) -> Tuple[bytes, PixelBuffer]:
    """Read a file and decode it to RGBA pixels with Pillow."""
    content = _read_file(path)
    try:
        with Image.open(io.BytesIO(content)) as img:
            pixels = PixelBuffer.from_array(np.asarray(img.convert("RGBA")))
    except (UnidentifiedImageError, OSError) as e:
        print(f"Error: Cannot decode image {path}: {e}", file=sys.stderr)
        sys.exit(1)
    return content, pixels


def _encode_png(pixels: PixelBuffer) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(pixels.data).save(buf, format="PNG")
    return buf.getvalue()


def _parse_gps(text: str) -> Tuple[float, float]:
    try:
        lat, lon = (float(part) for part in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"GPS must be 'lat,lon', got {text!r}")
    if valid_gps(lat, lon) is None:
        raise argparse.ArgumentTypeError(f"GPS out of range (lat -90..90, lon -180..180): {text!r}")
    return lat, lon


def registration_to_dict(original: RegisteredOriginal) -> Dict[str, Any]:
    """JSON-ready form of a registered original."""
    data = registration_record(original)
    data.update({
        "thumbnail": (
            base64.b64encode(_encode_png(original.thumbnail)).decode()
            if original.thumbnail is not None else None
        ),
        "signatures": [
            {
                "algorithm": sig.algorithm,
                "public_key": sig.public_key,
                "signature": sig.signature,
                "timestamp": sig.timestamp,
                "signer": sig.signer
            }
            for sig in original.signatures
        ],
    })
    return data


def registration_from_dict(data: Dict[str, Any]) -> RegisteredOriginal:
    """Inverse of ``registration_to_dict``."""
    thumbnail = None
    if data.get("thumbnail"):
        with Image.open(io.BytesIO(base64.b64decode(data["thumbnail"]))) as img:
            thumbnail = PixelBuffer.from_array(np.asarray(img.convert("RGBA")))

    digest = data.get("content_digest")
    return RegisteredOriginal(
        id=data["id"],
        content_digest=ContentDigest(bytes.fromhex(digest)) if digest else None,
        fingerprint=data.get("fingerprint"),
        width=data["width"],
        height=data["height"],
        file_size=data["file_size"],
        container=ContainerFormat(data.get("container", "unknown")),
        thumbnail=thumbnail,
        payload=parse_payload(data["payload"]) if data.get("payload") else None,
        created_at=data.get("created_at", ""),
        signatures=[RegistrationSignature(**sig) for sig in data.get("signatures", [])],
    )


def embed_command(args):
    """Embed an identity payload and write a lossless PNG."""
    athar = Athar()
    _, pixels = _load_image(args.file)

    payload = Payload(
        subject_id=args.subject,
        timestamp_ms=args.timestamp if args.timestamp is not None else int(time.time() * 1000),
        gps=args.gps,
        device_id=args.device,
        original_size=(pixels.width, pixels.height) if args.record_size else None,
    )

    try:
        embedded = athar.embed(pixels, payload)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    output_path = Path(args.output or f"{Path(args.file).stem}.athar.png")
    output_path.write_bytes(_encode_png(embedded))

    print(f"\n✓ Payload embedded successfully!\n")
    print(f"Output: {output_path.resolve()}")
    print(f"Payload: {serialize_payload(payload)}")


def extract_command(args):
    """Recover an embedded payload."""
    athar = Athar()
    _, pixels = _load_image(args.file)
    result = athar.extract(pixels)

    if args.json:
        payload = result.payload
        print(json.dumps({
            "found": result.found,
            "confidence": result.confidence.value,
            "matches": result.matches,
            "rotation": result.rotation,
            "payload": None if payload is None else {
                "subject_id": payload.subject_id,
                "gps": payload.gps_text,
                "timestamp_ms": payload.timestamp_ms,
                "device_id": payload.device_id,
                "original_size": list(payload.original_size) if payload.original_size else None,
            },
        }, indent=2))
    elif result.found:
        payload = result.payload
        print(f"Subject: {payload.subject_id}")
        print(f"GPS: {payload.gps_text or 'none'}")
        print(f"Timestamp: {payload.timestamp_ms}")
        if payload.device_id:
            print(f"Device: {payload.device_id}")
        if payload.original_size:
            print(f"Original size: {payload.original_size[0]}x{payload.original_size[1]}")
        print(f"Confidence: {result.confidence.value} ({result.matches} copies)")
        if result.rotation:
            print(f"Rotation: {result.rotation} degrees")
    else:
        print("No embedded payload found")

    sys.exit(0 if result.found else 1)


def inspect_command(args):
    """Print container signals and attribution."""
    athar = Athar()
    content = _read_file(args.file)
    signals = athar.inspect(content)
    attribution = athar.attributor.attribute(signals)

    if args.json:
        print(json.dumps({
            "container": signals.container.value,
            "width": signals.width,
            "height": signals.height,
            "software": signals.software,
            "make": signals.make,
            "model": signals.model,
            "xmp_creator_tool": signals.xmp_creator_tool,
            "comments": signals.comments,
            "icc_profile": signals.icc_profile_name,
            "chroma_subsampling": signals.chroma_subsampling.value if signals.chroma_subsampling else None,
            "quant_tables": {str(k): t.values for k, t in signals.quant_tables.items()},
            "has_jfif": signals.has_jfif,
            "has_exif": signals.has_exif,
            "progressive": signals.progressive,
            "dpi": list(signals.dpi) if signals.dpi else None,
            "truncated": signals.truncated,
            "attribution": {
                "label": attribution.label,
                "score": attribution.score,
                "basis": attribution.basis,
                "source": attribution.source.value,
                "platform_scores": attribution.platform_scores,
            },
        }, indent=2))
        return

    print(f"Container: {signals.container.value.upper()}")
    if signals.width and signals.height:
        print(f"Dimensions: {signals.width}x{signals.height}")
    for label, value in (("Software", signals.software), ("Make", signals.make),
                         ("Model", signals.model), ("CreatorTool", signals.xmp_creator_tool),
                         ("ICC profile", signals.icc_profile_name)):
        if value:
            print(f"{label}: {value}")
    if signals.chroma_subsampling:
        print(f"Chroma: {signals.chroma_subsampling.value}")
    if signals.luminance_table:
        print(f"Luminance DC: {signals.luminance_table.dc}")
    for comment in signals.comments:
        print(f"Comment: {comment}")
    if signals.truncated:
        print("Warning: file structure is truncated or malformed")
    print(f"\nAttribution: {attribution.label or 'none'} ({attribution.source.value})")
    print(f"Basis: {attribution.basis}")


def classify_command(args):
    """Classify a single image by provenance."""
    rng = np.random.default_rng(args.seed) if args.seed is not None else None
    athar = Athar(rng=rng)
    content, pixels = _load_image(args.file)
    result = athar.classify(pixels, len(content), Path(args.file).name, content=content)

    if args.json:
        print(json.dumps({
            "case": result.case.value,
            "confidence": result.confidence,
            "reasoning": result.reasoning,
            "metrics": result.metrics,
            "scores": result.scores,
        }, indent=2))
        return

    print(f"Case: {result.case.value}")
    print(f"Confidence: {result.confidence}%")
    print("\nReasoning:")
    for line in result.reasoning:
        print(f"  • {line}")


def register_command(args):
    """Register an original and save the record as JSON."""
    athar = Athar()
    content, pixels = _load_image(args.file)

    private_key = None
    if args.key:
        private_key = _read_file(args.key, "Private key").decode()

    payload = athar.extract(pixels, try_rotations=False).payload
    original = athar.register(content, pixels, payload=payload,
                              private_key=private_key, signer=args.signer)

    output_path = Path(args.output or f"{args.file}.registration.json")
    output_path.write_text(json.dumps(registration_to_dict(original), indent=2))

    print(f"\n✓ Original registered successfully!\n")
    print(f"Registration saved to: {output_path.resolve()}")
    print(f"Content digest: {original.content_digest.hex()}")
    print(f"Fingerprint: {original.fingerprint}")
    print(f"Signatures: {len(original.signatures)}")


def compare_command(args):
    """Compare a candidate image against a registered original."""
    athar = Athar()
    content, pixels = _load_image(args.file)
    record = _read_file(args.registration, "Registration")
    try:
        original = registration_from_dict(json.loads(record))
    except (ValueError, KeyError, TypeError, AttributeError, OSError) as e:
        print(f"Error: Invalid registration {args.registration}: {e}", file=sys.stderr)
        sys.exit(1)

    trust_store = [_read_file(path, "Trusted key").decode() for path in (args.trust or [])]
    verdict = athar.compare(content, pixels, original, ComparisonOptions(trust_store=trust_store))

    if args.json:
        print(json.dumps({
            "is_tampered": verdict.is_tampered,
            "confidence": verdict.confidence,
            "fingerprint_similarity": verdict.fingerprint_similarity,
            "pixel_similarity": verdict.pixel_diff.pixel_similarity if verdict.pixel_diff else None,
            "attribution": verdict.attribution.label if verdict.attribution else None,
            "findings": [
                {"category": f.category.value, "severity": f.severity.value, "text": f.text}
                for f in verdict.findings
            ],
        }, indent=2))
    else:
        print(f"\n{'='*60}")
        print("  Tamper Comparison Report")
        print(f"{'='*60}\n")
        print(f"Candidate: {Path(args.file).resolve()}")
        print(f"Original: {original.id}")
        print(f"Verdict: {'TAMPERED' if verdict.is_tampered else 'AUTHENTIC'}")
        print(f"Confidence: {verdict.confidence}%")

        if verdict.findings:
            print("\nFindings:")
            for finding in verdict.findings:
                print(f"  • [{finding.severity.value.upper()}] {finding.text}")

        print(f"\n{'='*60}\n")

    sys.exit(1 if verdict.is_tampered else 0)


def keys_command(args):
    """Generate keys command."""
    athar = Athar()

    if args.generate:
        print("Generating key pair...")

        public_key, private_key = athar.generate_key_pair()

        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)

        private_path = output_dir / "private.pem"
        public_path = output_dir / "public.pem"

        private_path.write_text(private_key)
        public_path.write_text(public_key)

        print(f"\n✓ Key pair generated successfully!\n")
        print(f"Private key: {private_path}")
        print(f"Public key: {public_path}")
        print("\n⚠ Important: Keep your private key secure and never share it!")
    else:
        print("Athar - Key Management\n")
        print("Generate a new key pair:")
        print("  athar keys --generate\n")
        print("Options:")
        print("  -g, --generate    Generate new key pair")
        print("  -o, --output      Output directory (default: ./keys)\n")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="athar",
        description="CLI tool for image provenance and tamper forensics"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose (debug) logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    embed_parser = subparsers.add_parser("embed", help="Embed an identity payload")
    embed_parser.add_argument("file", help="Image to embed into")
    embed_parser.add_argument("-s", "--subject", required=True, help="Subject identifier")
    embed_parser.add_argument("-g", "--gps", type=_parse_gps, help="Location as 'lat,lon'")
    embed_parser.add_argument("-t", "--timestamp", type=int, help="Timestamp in ms (default: now)")
    embed_parser.add_argument("-d", "--device", help="Device identifier")
    embed_parser.add_argument("--record-size", action="store_true",
                              help="Record the original dimensions for crop detection")
    embed_parser.add_argument("-o", "--output", help="Output PNG path")
    embed_parser.set_defaults(func=embed_command)

    extract_parser = subparsers.add_parser("extract", help="Recover an embedded payload")
    extract_parser.add_argument("file", help="Image to read")
    extract_parser.add_argument("-j", "--json", action="store_true", help="Output as JSON")
    extract_parser.set_defaults(func=extract_command)

    inspect_parser = subparsers.add_parser("inspect", help="Inspect container metadata")
    inspect_parser.add_argument("file", help="JPEG or PNG file")
    inspect_parser.add_argument("-j", "--json", action="store_true", help="Output as JSON")
    inspect_parser.set_defaults(func=inspect_command)

    classify_parser = subparsers.add_parser("classify", help="Classify image provenance")
    classify_parser.add_argument("file", help="Image to classify")
    classify_parser.add_argument("--seed", type=int, help="Seed for sampling")
    classify_parser.add_argument("-j", "--json", action="store_true", help="Output as JSON")
    classify_parser.set_defaults(func=classify_command)

    register_parser = subparsers.add_parser("register", help="Register an original")
    register_parser.add_argument("file", help="Original image")
    register_parser.add_argument("-k", "--key", help="Private key to sign the registration")
    register_parser.add_argument("--signer", help="Signer name")
    register_parser.add_argument("-o", "--output", help="Output JSON path")
    register_parser.set_defaults(func=register_command)

    compare_parser = subparsers.add_parser("compare", help="Compare a candidate with an original")
    compare_parser.add_argument("file", help="Candidate image")
    compare_parser.add_argument("-r", "--registration", required=True, help="Registration JSON")
    compare_parser.add_argument("-t", "--trust", nargs="+", help="Trusted public key files")
    compare_parser.add_argument("-j", "--json", action="store_true", help="Output as JSON")
    compare_parser.set_defaults(func=compare_command)

    keys_parser = subparsers.add_parser("keys", help="Manage cryptographic keys")
    keys_parser.add_argument("-g", "--generate", action="store_true", help="Generate new key pair")
    keys_parser.add_argument("-o", "--output", default="./keys", help="Output directory")
    keys_parser.set_defaults(func=keys_command)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
