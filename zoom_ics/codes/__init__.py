"""Output writers serializing a finished density hierarchy.

Every writer derives from :py:class:`~zoom_ics.codes.abc.OutputWriter` and is registered by name
in :py:data:`~zoom_ics.codes.abc.output_writer_registry`. The writer named by ``output.format``
is instantiated with :py:func:`~zoom_ics.codes.abc.select_output_writer`.

Writers only consume the public query interface of
:py:class:`~zoom_ics.grids.hierarchy.GridHierarchy`: ``levelmin``/``levelmax``, ``get_grid``,
``offset``/``offset_abs``, ``get_mask`` and ``count_leaf_cells``.
"""
from zoom_ics.codes.abc import OutputWriter, output_writer_registry, select_output_writer
from zoom_ics.codes.hdf5 import HDF5Writer
