#!/usr/bin/env python3
"""
Camera Diagnostic Tool for the scanner

Usage:
    python3 scripts/diagnose_cameras.py            # Probe /dev/video* (or indices 0-4)
    python3 scripts/diagnose_cameras.py /dev/video2 --frames 60

For each device this opens it the same way the scanner does, reads a
few frames, tries to decode a code from them and prints what to fix
when it fails.
"""

import argparse
import glob
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.constants import (
    REASON_DEVICE_BUSY, REASON_DEVICE_NOT_FOUND, REASON_PERMISSION_DENIED, REASON_UNSUPPORTED
)
from scanner.camera import IS_LINUX, CameraError, CameraSource
from scanner.decoder import QrDecoder

HINTS = {
    REASON_PERMISSION_DENIED: [
        "Add the user to the video group: sudo usermod -aG video $USER",
        "Then log out and back in",
    ],
    REASON_DEVICE_NOT_FOUND: [
        "Check the camera is connected: lsusb",
        "List devices: v4l2-ctl --list-devices",
    ],
    REASON_DEVICE_BUSY: [
        "Another process holds the camera: fuser -v /dev/video*",
        "Stop any running scanner before probing",
    ],
    REASON_UNSUPPORTED: [
        "The device may be a metadata node; try the next /dev/videoN",
        "Check formats: v4l2-ctl -d <device> --list-formats-ext",
    ],
}


def print_header(text):
    print(f"\n{'=' * 60}")
    print(f"  {text}")
    print('=' * 60)


def candidate_devices():
    if IS_LINUX:
        devices = sorted(glob.glob('/dev/video*'))
        if devices:
            return devices
    return list(range(5))


def probe(device, frames: int) -> bool:
    print(f"\n> {device}")
    source = CameraSource(device)
    decoder = QrDecoder()

    try:
        handle = source.acquire()
    except CameraError as e:
        print(f"  FAIL  {e.reason}: {e}")
        for hint in HINTS.get(e.reason, []):
            print(f"        -> {hint}")
        return False

    read = 0
    last_frame = None
    decoded = None
    try:
        for _ in range(frames):
            frame = handle.read()
            if frame is None:
                continue
            read += 1
            last_frame = frame
            if decoded is None:
                decoded = decoder.decode(frame)
    finally:
        handle.release()

    if read == 0:
        print(f"  FAIL  opened but no frames in {frames} reads")
        for hint in HINTS[REASON_UNSUPPORTED]:
            print(f"        -> {hint}")
        return False

    shape = getattr(last_frame, 'shape', None)
    print(f"  OK    {read}/{frames} frames{f', shape {shape}' if shape else ''}")
    if decoded:
        print(f"        decoded: \"{decoded[:40]}\"")
    else:
        print("        no code seen (hold one in view to test decoding)")
    return True


def main():
    parser = argparse.ArgumentParser(description='Probe cameras for the scanner')
    parser.add_argument('devices', nargs='*', help='Devices to probe (index or path)')
    parser.add_argument('--frames', type=int, default=30, help='Frames to read per device')
    args = parser.parse_args()

    print_header("Scanner Camera Diagnostics")
    devices = args.devices or candidate_devices()
    results = {str(d): probe(d, args.frames) for d in devices}

    print_header("Summary")
    for device, ok in results.items():
        print(f"  {'OK  ' if ok else 'FAIL'}  {device}")
    usable = [d for d, ok in results.items() if ok]
    if usable:
        print(f"\n  Use: CAMERA_DEVICE={usable[0]}")
        return 0
    return 1


if __name__ == '__main__':
    sys.exit(main())
