from .gadget import Gadget1File, write_gadget
